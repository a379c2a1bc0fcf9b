"""
Ingress D-Operator
Keeps legacy Ingress resources in sync with shared Gateway API resources
"""

__version__ = '0.1.0'
