"""simharness engine -- the components behind ``CoreSimulator``.

- ``waiter``: ``StateWaiter`` polling primitive
- ``processes``: ``ProcessSupervisor`` (find, wait for, terminate processes)
- ``bundles``: Info.plist inspection and directory digests
- ``layout``: per-device path layout (legacy or modern)
- ``simctl`` / ``xcode``: external toolchain wrappers
- ``simulator``: simulator boot sequence
- ``installer``: ``InstallationReconciler``
- ``launcher``: ``LaunchOrchestrator``
- ``sandbox``: ``SandboxResetter``
"""
