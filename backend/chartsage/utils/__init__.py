# Shared utilities - validators, circuit breaker
from chartsage.utils.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from chartsage.utils.validators import (
    normalize_pair_symbol,
    validate_image_data_url,
    validate_pair_symbol,
    validate_pattern_name,
)
