"""
Protected Content Matcher - Identity-aware media screening

Derives a signature for an uploaded image or video and decides whether it
matches a protected reference corpus closely enough to be flagged.
"""

__version__ = "1.0.0"
__author__ = "Protected Content Matcher Team"
__description__ = "Identity-aware screening of uploads against protected content"
