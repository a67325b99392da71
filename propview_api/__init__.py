"""
Propview listing service.
"""
