"""relaytrace.core: Version info, errors and structured logging helpers.

Import from subpackages:
    from relaytrace.otel import parse_traceparent, recover_context
    from relaytrace.router import BatchProcessor
    from relaytrace.aws import SNSPublisher, records_from_sqs_event
"""

__version__ = "0.1.0"
