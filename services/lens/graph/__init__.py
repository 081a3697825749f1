"""
Relationship-graph signals for recommendation.

Modules
-------
store       Read-only Cypher queries against Neo4j, typed records
enrichment  Time-boxed novelty / friend / heat / diversity with fallbacks
"""
