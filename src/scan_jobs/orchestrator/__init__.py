"""Job orchestration for external scanning tools.

One job wraps one external process. The orchestrator owns the set of
active jobs, supervises each process through the backend adapter, parses
its output with the protocol of the job kind (streaming JSON lines or a
single batch document) and fans lifecycle events out to subscribers and
to the persistence bridge.
"""
