"""Example Sluice pipeline config.

Use with `sluice run INPUT OUTPUT --config example_pipeline.py:PIPELINE`.
"""

from sluice.config.schema import PipelineConfig, PipelineOptions, StageSpec


PIPELINE = PipelineConfig(
    name="numbered-shout",
    options=PipelineOptions(
        chunk_size_bytes=16 * 1024,
        high_buffer_mark=64 * 1024,
    ),
    stages=[
        StageSpec(name="lines"),
        StageSpec(name="number-lines"),
        StageSpec(name="upper"),
        StageSpec(name="prefix", params={"text": ">> "}),
        StageSpec(name="digest"),
    ],
)
