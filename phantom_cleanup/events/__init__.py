"""Exception dispatch for the cleanup daemon."""

from .exception_chain import ExceptionChain, ExceptionHandler

__all__ = ['ExceptionChain', 'ExceptionHandler']
