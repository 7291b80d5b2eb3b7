"""
SnipWire service package.

Connects a storefront to the Snipcart e-commerce API:
- Outbound: cached REST accessors for orders, subscriptions, carts,
  customers, products, discounts and settings
- Inbound: validated webhook endpoint with the tax calculation handler

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.transport: HTTP transport producing result envelopes.
- app.caching: Segmented response cache and its backends.
- app.adapters: The Snipcart REST gateway.
- app.webhooks: Webhook receiver, event table and handlers.
"""
