"""
LinkScore Analysis Engine

Competitive authority-link analysis that:
1. Discovers market competitors from organic search results
2. Resolves authority referring domains for the target and each competitor
3. Compares current vs campaign-start link profiles
4. Finds link gaps across the strongest competitors
5. Scores performance (0-100) with red flags and lead prioritization
"""

__version__ = "0.1.0"
