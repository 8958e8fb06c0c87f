"""DataManager client: streaming upload and download pipelines."""
