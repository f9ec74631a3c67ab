"""
Executor abstraction for launching work units.

Executors implement the strategy for starting units:
- LocalDockerExecutor: one docker container per unit on this host
- EcsExecutor: one batched RunTask request against an ECS cluster
"""
