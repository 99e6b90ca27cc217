"""Lapor Core - citizen report lifecycle orchestration"""
