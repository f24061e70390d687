"""
Identity and authorization gateway for the camper app.

The gateway creates each account record exactly once, resolves e-mail
collisions between credential providers, evaluates the authorization ladder
(anonymous, authenticated, verified, entitled) for a requested capability,
and meters free-tier usage per day.

.. code-block:: python

   from camper.identity import capabilities
   from camper.identity.factory import create_web_app
   from camper.identity.gateway import current_gateway

   app = create_web_app({'SQLALCHEMY_DATABASE_URI': 'sqlite://',
                         'REDIS_FAKE': True, 'CREATE_DB': True})
   with app.app_context():
       gateway = current_gateway()
       result = gateway.sign_up('a@x.com', 'p4ssw0rd', 'Alana',
                                handle='camper1')
       decision = gateway.request(capabilities.UPLOAD_PHOTO,
                                  result.account.account_id, result.session)
       decision.failure   # 'verification_required'

"""
