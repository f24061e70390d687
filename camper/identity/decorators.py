"""
Capability-based protection of Flask routes.

This module provides :func:`gated`, a decorator factory that runs the gate
chain, and for metered capabilities the quota ledger, before the route is
called. Capabilities are the constants in :mod:`camper.identity.capabilities`.

.. code-block:: python

   from camper.identity import capabilities
   from camper.identity.decorators import gated


   @blueprint.route('/photos', methods=['POST'])
   @gated(capabilities.UPLOAD_PHOTO)
   def upload_photo():
       '''Only verified accounts with quota left get here.'''
       ...

When the decorated route function is called...

- The session loaded by :class:`.IdentityGateway` is read from
  ``request.auth``.
- ``401`` is returned if the chain stopped at ``login_required``.
- ``403`` is returned for other gate failures, with the failure code as the
  description so the client can render the next step.
- ``429`` is returned if the capability is metered and today's quota is used
  up.
- ``503`` is returned if the gateway is unconfigured or a store is down.
- Otherwise the decision is put on ``request.access`` and the route is
  called with the original parameters.

"""

from typing import Any, Callable, Union
from functools import wraps
import logging

from flask import request
from werkzeug.exceptions import Forbidden, ServiceUnavailable, \
    TooManyRequests, Unauthorized

from . import domain
from .domain import GateFailure
from .exceptions import TransientStoreError
from .gateway import Unconfigured, current_gateway

logger = logging.getLogger(__name__)


def gated(capability: Union[domain.Capability, str]) -> Callable:
    """
    Generate a decorator that enforces access to ``capability``.

    Parameters
    ----------
    capability : :class:`.domain.Capability` or str
        The capability required to use the decorated route, or its key.

    Returns
    -------
    function

    """
    def protector(func: Callable) -> Callable:
        """Decorator that provides capability enforcement."""
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            gateway = current_gateway()
            if isinstance(gateway, Unconfigured):
                logger.error('Gateway unconfigured: %s', gateway.reason)
                raise ServiceUnavailable('Accounts are unavailable')

            session = getattr(request, 'auth', None)
            account_id = session.account_id if session else None
            try:
                decision = gateway.request(capability, account_id, session)
            except TransientStoreError as e:
                raise ServiceUnavailable(e.user_message) from e

            failure = decision.failure
            if failure == GateFailure.LOGIN_REQUIRED:
                logger.debug('No valid session; aborting')
                raise Unauthorized(failure)
            if failure == GateFailure.QUOTA_EXCEEDED:
                logger.debug('Quota exhausted for %s', account_id)
                raise TooManyRequests(failure)
            if failure is not None:
                logger.debug('Request stopped at %s', failure)
                raise Forbidden(failure)

            request.access = decision
            logger.debug('Request is authorized, proceeding')
            return func(*args, **kwargs)
        return wrapper
    return protector
