"""Anomaly detection module: spoofing guard, rate limiter, device fingerprint and pattern analysis."""
from .rate_limiter import RateLimiter, RateLimiterState, RateLimitDecision
from .spoofing_guard import SpoofingGuard, SpoofingCheck, LocationHistory
from .fingerprint import generate_device_fingerprint
from .pattern_analyzer import PatternAnalyzer, PatternAnalysis, PatternType, RiskLevel
__all__ = ['RateLimiter', 'RateLimiterState', 'RateLimitDecision',
           'SpoofingGuard', 'SpoofingCheck', 'LocationHistory',
           'generate_device_fingerprint',
           'PatternAnalyzer', 'PatternAnalysis', 'PatternType', 'RiskLevel']
