"""
ICP mining services.
"""
