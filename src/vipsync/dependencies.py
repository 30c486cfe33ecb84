"""Shared FastAPI dependencies.

Long-lived collaborators are built once in the lifespan and kept on
``app.state``; these accessors hand them to the routers.
"""

from fastapi import Request

from vipsync.notifications.notifier import NotificationDispatcher
from vipsync.payments.gateway import PaymentGateway
from vipsync.votes.service import VoteService


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_vote_service(request: Request) -> VoteService:
    return request.app.state.vote_service
