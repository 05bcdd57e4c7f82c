"""StoreLens question pipeline: validation, execution, charting and orchestration."""
