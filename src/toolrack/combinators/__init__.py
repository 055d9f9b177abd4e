"""Combinators that build new tools out of existing ones."""

from toolrack.combinators.bind import bind  # noqa: F401
from toolrack.combinators.mapping import postprocess, preprocess  # noqa: F401
from toolrack.combinators.parallel import parallel  # noqa: F401
from toolrack.combinators.pipeline import compose, pipe  # noqa: F401
from toolrack.combinators.retry import Backoff, RetryDetail, retry  # noqa: F401
from toolrack.combinators.tap import tap  # noqa: F401
from toolrack.combinators.when import when  # noqa: F401
