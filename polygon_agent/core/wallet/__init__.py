"""
Wallet sessions: approval requests, sealed payload binding, signing identity.
"""
