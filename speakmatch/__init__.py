"""
SpeakMatch: practise spoken French by describing pictures.
"""

__version__ = "1.0.0"
