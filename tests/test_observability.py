"""Tests for the metrics backends."""

from lab_assistant.observability import MetricsCollector, PrometheusMetrics, _build_metrics_backend


class TestMetricsCollector:
    def test_render_includes_retrieval_and_answers(self):
        metrics = MetricsCollector()
        metrics.observe_retrieval("primary", 3, 12.5)
        metrics.observe_retrieval("fallback", 2, 40.0)
        metrics.observe_answer("rag_llm")
        metrics.observe_external_api("openai", "embeddings", 200, 80.0)

        text = metrics.render_prometheus()

        assert 'retrieval_requests_total{mode="primary"} 1' in text
        assert 'retrieval_chunks_total{mode="fallback"} 2' in text
        assert 'answers_total{source="rag_llm"} 1' in text
        assert 'external_api_requests_total{provider="openai",operation="embeddings",status="200"} 1' in text
        assert metrics.retrieval_count("primary") == 1
        assert metrics.answer_count("llm") == 0

    def test_histogram_buckets_are_cumulative(self):
        metrics = MetricsCollector(buckets_ms=[10, 100])
        metrics.observe_request("GET", "/health", 200, 5.0)
        metrics.observe_request("GET", "/health", 200, 50.0)
        metrics.observe_request("GET", "/health", 200, 500.0)

        text = metrics.render_prometheus()

        assert 'http_request_duration_ms_bucket{method="GET",path="/health",le="10"} 1' in text
        assert 'http_request_duration_ms_bucket{method="GET",path="/health",le="100"} 2' in text
        assert 'http_request_duration_ms_bucket{method="GET",path="/health",le="+Inf"} 3' in text


class TestBackendSelection:
    def test_prometheus_backend(self):
        backend = _build_metrics_backend("prometheus")
        backend.observe_answer("database")

        assert isinstance(backend, PrometheusMetrics)
        assert 'answers_total{source="database"} 1.0' in backend.render_prometheus()

    def test_default_backend(self):
        assert isinstance(_build_metrics_backend("inmemory"), MetricsCollector)
