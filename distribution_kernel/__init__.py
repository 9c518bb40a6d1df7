"""
Distribution Kernel

Percentage-based allocation rules for a territory's periodically produced
knowledge pool:
- Multi-profile rule editing with live category summaries
- Allow/deny and budget conflict detection
- Publish/lock of a rule snapshot until its scheduled execution
- SQLAlchemy-backed persistence gateway
"""

__version__ = "0.1.0"
