"""
ICP (Ideal Client Profile) mining.

Crawls the finder's person/role search page by page for each mining job,
resolves and validates a contact email per person, and creates site leads.

Usage:
    from icp_miner.services.mining_orchestrator import run_icp_mining

    response = await run_icp_mining({"site_id": "...", "batch": True})
"""

__version__ = "1.0.0"
