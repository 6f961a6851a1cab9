"""Contribution Pipeline - human-guided intake of historical documents.

Drives a contributor from a source URL through layout description,
structure confirmation and extraction, then promotes qualifying
slaveholder records from government sources into the confirmed registry.
"""

__version__ = "0.1.0"

# Lazy imports so that `import contribution_pipeline` stays cheap
def __getattr__(name: str):
    if name == "ContributionPipeline":
        from contribution_pipeline.pipeline import ContributionPipeline
        return ContributionPipeline
    if name == "ContributionStorage":
        from contribution_pipeline.storage import ContributionStorage
        return ContributionStorage
    if name == "models":
        from contribution_pipeline import models
        return models
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
