"""AI website generation pipeline package.

This package turns a short business description into a published static
website by chaining unreliable, pay-per-call generative backends behind a
resilience layer that never hands a transient backend failure back to the
caller.

Package Structure
-----------------
- `resilience/`:
    Retry policy (tenacity), circuit breakers and the tiered fallback chain.
- `backends/`:
    Environment configuration, per-model-family request/response adapters,
    the asynchronous model runtime client and rule-based template content.
- `pipeline/`:
    The SPEC, CODE, IMAGES, ASSEMBLE and PUBLISH stages and the orchestrator
    sequencing them.
- `config.py`: All configuration constants as UPPER_SNAKE_CASE.
- `exceptions.py`: The project exception taxonomy.
- `events.py`: Typed pipeline event records and sinks.

Examples
--------
>>> from sitegen.models import GenerationRequest
>>> request = GenerationRequest(business_name="Green Basket", business_type="grocery")
>>> # See ``sitegen.context.open_context`` and ``sitegen.cli`` for entrypoints.
"""

__version__ = "0.1.0"
