"""
Service layer of the BI backend.

Modules:
    data_layer      - SQLAlchemy engine, parameterized queries, local schema/seed
    data_sources    - DataSource interface with SQL and in-memory implementations
    mock_data       - Demo POS records for one account
    query_engine    - Aggregations, segmentation and the QueryEngine
    corporate       - Validated API façade returning DTOs
    kpi             - KPI catalogue, static and remote KPI providers
    cache           - Bounded TTL response cache
    initializer     - Parallel data bundles, caching and realtime sync
    provider        - Dashboard filter state and per-domain load state
"""
