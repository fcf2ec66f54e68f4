"""
Key derivation, scripts, signing and transaction assembly.
"""
