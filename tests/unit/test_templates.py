# ABOUTME: Unit tests for the manifest template engine
# ABOUTME: Tests deployments, project documents, pipelines, registrations, validation

import json

import pytest
from ruamel.yaml import YAML

from gitops_mcp.errors import InvalidFormatError, MissingParameterError, UnsupportedLanguageError
from gitops_mcp.templates import (
    GENERATOR_FIELDS,
    SUPPORTED_LANGUAGES,
    bootstrap_files,
    deployment_manifest,
    grafana_manifest,
    normalize_repo_url,
    pipeline_script,
    project_document,
    registration_config,
    require,
    validate_json,
    validate_yaml,
)


def load(text: str):
    return YAML(typ="safe").load(text)


def load_all(text: str) -> list:
    return list(YAML(typ="safe").load_all(text))


@pytest.mark.unit
class TestDeploymentManifest:
    """Tests for the Deployment skeleton."""

    def test_application_deployment(self):
        """Test names, labels, image and port of an app deployment."""
        doc = load(deployment_manifest("billing", "nginx:1.25"))

        assert doc["apiVersion"] == "apps/v1"
        assert doc["kind"] == "Deployment"
        assert doc["metadata"]["name"] == "billing-deployment"
        assert doc["metadata"]["labels"]["app"] == "billing"
        assert doc["spec"]["replicas"] == 1
        assert doc["spec"]["selector"]["matchLabels"]["app"] == "billing"
        assert doc["spec"]["template"]["metadata"]["labels"]["app"] == "billing"
        container = doc["spec"]["template"]["spec"]["containers"][0]
        assert container["name"] == "billing"
        assert container["image"] == "nginx:1.25"
        assert container["ports"] == [{"containerPort": 80}]

    def test_model_server_port(self):
        """Test ML deployments expose port 5000."""
        doc = load(deployment_manifest("fraud", "acme/fraud:2", port=5000))

        container = doc["spec"]["template"]["spec"]["containers"][0]
        assert container["ports"] == [{"containerPort": 5000}]

    def test_deterministic(self):
        """Test identical parameters give identical text."""
        assert deployment_manifest("billing", "nginx:1.25") == deployment_manifest(
            "billing", "nginx:1.25"
        )

    def test_key_order_preserved(self):
        """Test apiVersion comes first, as in hand-written manifests."""
        text = deployment_manifest("billing", "nginx:1.25")

        assert text.startswith("apiVersion: apps/v1\nkind: Deployment\n")

    def test_missing_image_rejected(self):
        """Test an empty image is a missing parameter."""
        with pytest.raises(MissingParameterError, match="image"):
            deployment_manifest("billing", "")


@pytest.mark.unit
class TestGrafanaManifest:
    """Tests for the fixed monitoring manifest."""

    def test_grafana_deployment(self):
        """Test the Grafana deployment parses and uses port 3000."""
        doc = load(grafana_manifest())

        assert doc["metadata"]["name"] == "grafana"
        container = doc["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "grafana/grafana"
        assert container["ports"] == [{"containerPort": 3000}]
        assert doc["spec"]["template"]["spec"]["volumes"][0]["emptyDir"] == {}


@pytest.mark.unit
class TestRegistrationConfig:
    """Tests for config_dir.json generation."""

    def test_fields_and_order(self):
        """Test keys appear in the order the ApplicationSet expects."""
        text = registration_config(
            app_name="billing",
            dest_server="https://kubernetes.default.svc",
            dest_namespace="payments",
            src_path="manifests/billing/",
            repo_url="https://github.com/acme/infra.git",
        )
        config = json.loads(text)

        assert list(config) == [
            "appName",
            "userGivenName",
            "destNamespace",
            "destServer",
            "srcPath",
            "srcRepoURL",
            "srcTargetRevision",
            "labels",
            "exclude",
            "include",
        ]
        assert config["appName"] == "billing"
        assert config["userGivenName"] == "billing"
        assert config["destNamespace"] == "payments"
        assert config["srcPath"] == "manifests/billing/"
        assert config["srcRepoURL"] == "https://github.com/acme/infra.git"
        assert config["srcTargetRevision"] == ""
        assert config["labels"] is None

    def test_two_space_indent(self):
        """Test the JSON is indented by two spaces."""
        text = registration_config("a", "s", "n", "p/", "r.git")

        assert '\n  "appName": "a"' in text

    def test_keys_match_generator_placeholders(self):
        """Test every placeholder the project watches is a config key."""
        config = json.loads(registration_config("a", "s", "n", "p/", "r.git"))

        assert set(GENERATOR_FIELDS) <= set(config)


@pytest.mark.unit
class TestProjectDocument:
    """Tests for the AppProject + ApplicationSet document."""

    def test_two_documents(self):
        """Test the stream holds an AppProject then an ApplicationSet."""
        docs = load_all(
            project_document("shop", "https://kubernetes.default.svc", "https://github.com/acme/infra")
        )

        assert [d["kind"] for d in docs] == ["AppProject", "ApplicationSet"]
        assert docs[0]["metadata"]["name"] == "shop"
        assert docs[0]["spec"]["description"] == "shop project"
        assert docs[1]["spec"]["template"]["spec"]["project"] == "shop"

    def test_cluster_url_annotation(self):
        """Test the AppProject records its default destination server."""
        docs = load_all(project_document("shop", "https://10.0.0.1:6443", "https://github.com/acme/infra"))

        annotations = docs[0]["metadata"]["annotations"]
        assert annotations["argocd-autopilot.argoproj-labs.io/default-dest-server"] == "https://10.0.0.1:6443"
        assert annotations["argocd.argoproj.io/sync-wave"] == "-2"

    def test_generator_placeholders_pass_through(self):
        """Test {{ }} placeholders are written out verbatim."""
        text = project_document("shop", "https://kubernetes.default.svc", "https://github.com/acme/infra")

        for placeholder in (
            "{{ appName }}",
            "{{ destNamespace }}",
            "{{ destServer }}",
            "{{ srcPath }}",
            "{{ srcRepoURL }}",
            "{{ srcTargetRevision }}",
        ):
            assert placeholder in text
        assert "name: shop-{{ userGivenName }}" in text

    def test_watches_both_config_files(self):
        """Test the ApplicationSet has a git generator for each config file."""
        docs = load_all(project_document("shop", "https://kubernetes.default.svc", "https://github.com/acme/infra"))

        generators = docs[1]["spec"]["generators"]
        paths = [g["git"]["files"][0]["path"] for g in generators]
        assert paths == ["apps/**/config.json", "apps/**/config_dir.json"]
        assert all(g["git"]["repoURL"] == "https://github.com/acme/infra.git" for g in generators)

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/infra",
            "https://github.com/acme/infra.git",
            "https://github.com/acme/infra/",
        ],
    )
    def test_git_suffix_added_once(self, url):
        """Test .git is appended only when missing."""
        assert normalize_repo_url(url) == "https://github.com/acme/infra.git"
        assert ".git.git" not in project_document("shop", "https://kubernetes.default.svc", url)

    def test_missing_repo_url_rejected(self):
        """Test the repository URL is required."""
        with pytest.raises(MissingParameterError, match="repo_url"):
            project_document("shop", "https://kubernetes.default.svc", "")


@pytest.mark.unit
class TestPipelineScript:
    """Tests for Jenkins pipeline selection."""

    def test_python_pipeline(self):
        """Test the python pipeline tests with pytest and builds the image."""
        text = pipeline_script("python", "svc:1.0", "docker.io", "dockerhub-creds")

        assert "pytest" in text
        assert 'docker.build("svc:1.0")' in text
        assert 'docker.withRegistry("https://docker.io", "dockerhub-creds")' in text

    def test_java_pipeline(self):
        """Test the java pipeline builds with the maven wrapper."""
        text = pipeline_script("java", "svc:1.0", "ghcr.io", "ghcr")

        assert "./mvnw clean package -DskipTests" in text
        assert 'REGISTRY = "ghcr.io"' in text

    def test_nodejs_pipeline(self):
        """Test the nodejs pipeline installs with npm ci."""
        text = pipeline_script("nodejs", "web:3", "docker.io", "creds")

        assert "npm ci" in text
        assert "NODE_ENV = 'production'" in text

    def test_jenkins_variables_left_alone(self):
        """Test Jenkins' own ${...} expressions survive substitution."""
        text = pipeline_script("python", "svc:1.0", "docker.io", "creds")

        assert "${env.JOB_NAME} - ${env.BUILD_NUMBER}" in text

    def test_language_is_case_insensitive(self):
        """Test 'Python' selects the python pipeline."""
        assert pipeline_script("Python", "svc:1.0", "r", "c") == pipeline_script(
            "python", "svc:1.0", "r", "c"
        )

    def test_unknown_language_rejected(self):
        """Test an unsupported language is an error, never a default."""
        with pytest.raises(UnsupportedLanguageError) as exc_info:
            pipeline_script("go", "svc:1.0", "docker.io", "creds")

        assert exc_info.value.language == "go"
        assert exc_info.value.supported == SUPPORTED_LANGUAGES

    def test_missing_image_rejected(self):
        """Test the docker image is required."""
        with pytest.raises(MissingParameterError, match="docker_image"):
            pipeline_script("java", "", "docker.io", "creds")


@pytest.mark.unit
class TestBootstrapFiles:
    """Tests for repository bootstrap templates."""

    @pytest.mark.parametrize("language", SUPPORTED_LANGUAGES)
    def test_every_language_has_both_files(self, language):
        """Test each supported language ships a Dockerfile and Jenkinsfile."""
        files = bootstrap_files(language)

        assert files.language == language
        assert files.dockerfile.startswith("FROM ")
        assert files.jenkinsfile.startswith("@Library('shared-ci-cd')_")

    def test_unknown_language_rejected(self):
        """Test bootstrap templates are limited to the same languages."""
        with pytest.raises(UnsupportedLanguageError):
            bootstrap_files("rust")


@pytest.mark.unit
class TestValidation:
    """Tests for caller-supplied content validation."""

    def test_valid_multi_document_yaml(self):
        """Test a valid two-document stream passes."""
        validate_yaml("a: 1\n---\nb: 2\n")

    def test_invalid_yaml(self):
        """Test malformed YAML raises InvalidFormatError."""
        with pytest.raises(InvalidFormatError, match="Invalid YAML"):
            validate_yaml("key: value: nested\n")

    def test_error_in_second_document(self):
        """Test every document of the stream is checked."""
        with pytest.raises(InvalidFormatError):
            validate_yaml("a: 1\n---\nb: [1, 2\n")

    def test_valid_json(self):
        """Test a JSON object passes."""
        validate_json('{"appName": "billing"}')

    def test_invalid_json(self):
        """Test malformed JSON raises InvalidFormatError."""
        with pytest.raises(InvalidFormatError, match="Invalid JSON"):
            validate_json("{appName: billing}")

    def test_require_names_all_missing(self):
        """Test every missing parameter is reported at once."""
        with pytest.raises(MissingParameterError) as exc_info:
            require(name="", image=None, port=80)

        assert exc_info.value.details == "name, image"
