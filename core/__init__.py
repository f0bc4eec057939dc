"""Core - configuration, logging, storage, auth and assistant sessions"""
