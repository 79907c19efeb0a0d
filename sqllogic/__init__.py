"""
SQL logic test runner: execute `.test` fixtures against several database handlers
"""

__version__ = "0.1.0"
