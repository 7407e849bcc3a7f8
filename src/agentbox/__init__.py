"""agentbox — sandboxed task executor.

Pulls task envelopes from a Redis queue, runs each one inside a
resource-bounded, network-isolated container, and publishes progress to a
shared state store and broadcast channel.

Package layout::

    agentbox.core        logging, errors, settings, models, state store, events
    agentbox.execution   pool, supervisor, queue consumer, sweeper, worker
    agentbox.runner      in-container entrypoint and tool registry
    agentbox.cli         ``agentbox`` command line

Tags:
    agentbox, executor, sandbox, containers, redis
"""

__version__ = "0.1.0"
