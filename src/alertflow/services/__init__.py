"""
alertflow Services

Domain services built on the core infrastructure.
"""
