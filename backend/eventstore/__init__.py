"""Central event store schema and database plumbing shared by ingestion loaders."""
