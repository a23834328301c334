"""
CRM Team Reporter

Consolidated opportunity-product reports per team, built by walking the
CRM user hierarchy from HPR users up through their management chains.
"""

__version__ = "1.0.0"
