"""
    Receipt to inventory extraction pipeline
"""
