"""
Serverless Entry Points
One function per route; errors propagate to the platform, which answers 5xx
"""

from dalle_proxy import handlers
from dalle_proxy.models import InboundRequest


def submit_image(event, context):
    return handlers.submit_image(InboundRequest.from_event(event))


def poll_task(event, context):
    return handlers.poll_task(InboundRequest.from_event(event))


def get_image(event, context):
    return handlers.get_image(InboundRequest.from_event(event))
