"""
Hierarchical media analysis engine: portfolio -> project -> media.

Entry point: `analysis.service.create_analysis_service`. This module must stay
free of imports because `repositories` imports `analysis.models`.
"""
