"""
BidVet - Crew Package

CrewAI orchestration for bid analysis.
"""

from crew.bid_crew import BidCrew

__all__ = ["BidCrew"]
