from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from prompter_live.config import CliOverrides, YamlConfigLoader
from prompter_live.config.models import ConfigLoadRequest
from prompter_live.core.models import Comment, OutboundRequest
from prompter_live.logging import init_logging
from prompter_live.pipeline import has_visible_content, sanitize

_SAMPLE_REPLY = """## Thanks for asking!

**Yes**, the stream runs every *Friday* evening.

```
schedule --week
```

- Fridays at 20:00
- Sometimes a bonus Sunday session when the weather is bad and nobody wants to go outside anyway
"""


async def main() -> None:
    config = await YamlConfigLoader().load(
        ConfigLoadRequest(
            yaml_path="examples/config.yaml",
            dotenv_path=None,
            overrides=CliOverrides(comment_length_cap=80),
        )
    )
    init_logging(config.logging)

    logger = logging.getLogger("smoke")
    logger.info(
        "smoke.config dry_run=%s chunk_mode=%s comment_length_cap=%s truncation_suffix=%r",
        config.app.dry_run,
        config.ai.chunk_mode,
        config.pipeline.comment_length_cap,
        config.pipeline.truncation_suffix,
    )

    comment = Comment(
        id="smoke-1",
        author="viewer42",
        author_id=None,
        text="When is the next stream?",
        published_at=datetime.now(timezone.utc),
    )
    request = OutboundRequest.from_comment(comment, template=config.ai.comment_template)
    logger.info("smoke.outbound_request text=%r comment_id=%s", request.text, request.metadata.comment_id)

    reply = sanitize(_SAMPLE_REPLY, config.pipeline.comment_length_cap, suffix=config.pipeline.truncation_suffix)
    logger.info(
        "smoke.sanitized chars=%d truncated=%s postable=%s text=%r",
        len(reply),
        reply.endswith(config.pipeline.truncation_suffix),
        has_visible_content(reply),
        reply,
    )


if __name__ == "__main__":
    asyncio.run(main())
