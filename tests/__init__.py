"""Test suite for the DeepSeek proxy."""
