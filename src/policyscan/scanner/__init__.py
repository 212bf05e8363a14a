"""Remote scanning engine: fetcher, detectors, indexer and orchestrator."""
