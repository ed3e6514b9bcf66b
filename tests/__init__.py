"""
Test suite for the turn orchestrator.

This package contains tests for:
- Schema models and image state transitions
- The Gemini streaming chat client
- Persistence gateway and conversation cache
- Speech capture
- The turn accumulator state machine, replay and failure paths
- Image attachment and conversation logging utilities
"""
