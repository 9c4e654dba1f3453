"""Marketplace — verification tasks, bids and their lifecycles."""

from coachmarket.market.marketplace import BidAcceptance, MarketplaceEngine, TaskTransition
from coachmarket.market.task_state_machine import TaskStateMachine

__all__ = ["BidAcceptance", "MarketplaceEngine", "TaskStateMachine", "TaskTransition"]
