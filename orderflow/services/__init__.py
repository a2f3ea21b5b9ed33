"""
                        Services Module

Business logic of the order lifecycle core. External collaborators follow the
hybrid pattern: Mock (development) and Real (production) implementations
behind one interface.

Services:
    - order_state: order state machine
    - inventory: stock movement ledger
    - tracking: order tracking history
    - fanout: live sessions, routing and event delivery
    - location: driver location relay
    - checkout: order creation and payment intent
    - webhooks: payment provider events
    - payment: Stripe payment intents and webhook verification
    - notifications: Twilio SMS and SendGrid e-mail
"""
