"""coachmarket — RBAC, bidding and escrow core of a job-seeker / career-coach marketplace."""

__version__ = "0.1.0"
