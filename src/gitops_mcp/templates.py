# ABOUTME: Manifest template engine for GitOps MCP Server
# ABOUTME: Deployments, ArgoCD project documents, registrations, Jenkins pipelines, validation

"""
Pure text generators for every artifact the workflows commit.

Nothing in this module touches the network. Every function is deterministic:
the same parameters always produce byte-identical text.

Two kinds of placeholder appear in the output and they never mix:

    $name / ${name}     substituted here, by string.Template
    {{ name }}          written out verbatim, resolved later by the
                        ArgoCD ApplicationSet git generator

The {{ }} placeholders are never part of a template's source text. They are
produced from GENERATOR_FIELDS and handed to string.Template as ordinary
substitution VALUES, so the local substituter has no way to touch them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from io import StringIO
from string import Template
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from gitops_mcp.errors import InvalidFormatError, MissingParameterError, UnsupportedLanguageError

SUPPORTED_LANGUAGES = ("java", "python", "nodejs")

APP_PORT = 80
ML_PORT = 5000

# Keys of config_dir.json; the ApplicationSet reads them back as {{ key }}
GENERATOR_FIELDS = (
    "appName",
    "userGivenName",
    "destNamespace",
    "destServer",
    "srcPath",
    "srcRepoURL",
    "srcTargetRevision",
    "exclude",
    "include",
)


def generator_placeholder(field: str) -> str:
    """The literal ApplicationSet placeholder for a config_dir.json key."""
    return f"{{{{ {field} }}}}"


_PASSTHROUGH = {f"gen_{field}": generator_placeholder(field) for field in GENERATOR_FIELDS}


# =============================================================================
# PARAMETERS AND VALIDATION
# =============================================================================


def require(**params: Any) -> None:
    """Raise MissingParameterError naming every empty or missing parameter."""
    missing = [name for name, value in params.items() if value is None or not str(value).strip()]
    if missing:
        raise MissingParameterError("Missing required parameters", ", ".join(missing))


def validate_yaml(content: str) -> None:
    """
    Raise InvalidFormatError unless every document in content parses.

    Multi-document streams (AppProject --- ApplicationSet) are checked in
    full; an error in the second document is still an error.
    """
    yaml = YAML(typ="safe")
    try:
        list(yaml.load_all(content))
    except YAMLError as e:
        raise InvalidFormatError("Invalid YAML format", str(e)) from e


def validate_json(content: str) -> None:
    """Raise InvalidFormatError unless content is a JSON document."""
    try:
        json.loads(content)
    except json.JSONDecodeError as e:
        raise InvalidFormatError("Invalid JSON format", str(e)) from e


def _dump_yaml(data: dict[str, Any]) -> str:
    yaml = YAML()
    yaml.default_flow_style = False
    yaml.width = 4096
    stream = StringIO()
    yaml.dump(data, stream)
    return stream.getvalue()


# =============================================================================
# DEPLOYMENTS
# =============================================================================


def deployment_manifest(name: str, image: str, port: int = APP_PORT) -> str:
    """
    Single-container Deployment for an application or model server.

    Every label, the selector and the container are named after the
    workload; the Deployment itself is <name>-deployment.
    """
    require(name=name, image=image)
    deployment = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": f"{name}-deployment",
            "labels": {"app": name},
        },
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {
                    "containers": [
                        {
                            "name": name,
                            "image": image,
                            "ports": [{"containerPort": port}],
                        }
                    ]
                },
            },
        },
    }
    return _dump_yaml(deployment)


GRAFANA_DEPLOYMENT = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: grafana
  namespace: default
spec:
  replicas: 1
  selector:
    matchLabels:
      app: grafana
  template:
    metadata:
      labels:
        app: grafana
    spec:
      containers:
      - name: grafana
        image: grafana/grafana
        ports:
        - containerPort: 3000
        volumeMounts:
        - name: grafana-storage
          mountPath: /var/lib/grafana
      volumes:
      - name: grafana-storage
        emptyDir: {}
"""


def grafana_manifest() -> str:
    return GRAFANA_DEPLOYMENT


# =============================================================================
# ARGOCD REGISTRATION
# =============================================================================


def registration_config(
    app_name: str,
    dest_server: str,
    dest_namespace: str,
    src_path: str,
    repo_url: str,
) -> str:
    """
    config_dir.json content that makes the ApplicationSet pick up an app.

    src_path is the manifest directory ("manifests/billing/"), repo_url
    the clone URL ArgoCD pulls from.
    """
    require(
        app_name=app_name,
        dest_server=dest_server,
        dest_namespace=dest_namespace,
        src_path=src_path,
        repo_url=repo_url,
    )
    config = {
        "appName": app_name,
        "userGivenName": app_name,
        "destNamespace": dest_namespace,
        "destServer": dest_server,
        "srcPath": src_path,
        "srcRepoURL": repo_url,
        "srcTargetRevision": "",
        "labels": None,
        "exclude": "",
        "include": "",
    }
    return json.dumps(config, indent=2)


# =============================================================================
# ARGOCD PROJECT (AppProject + ApplicationSet)
# =============================================================================

_PROJECT_TEMPLATE = Template("""\
apiVersion: argoproj.io/v1alpha1
kind: AppProject
metadata:
  annotations:
    argocd-autopilot.argoproj-labs.io/default-dest-server: ${cluster_url}
    argocd.argoproj.io/sync-options: PruneLast=true
    argocd.argoproj.io/sync-wave: "-2"
  creationTimestamp: null
  name: ${project_name}
  namespace: argocd
spec:
  clusterResourceWhitelist:
  - group: '*'
    kind: '*'
  description: ${project_name} project
  destinations:
  - namespace: '*'
    server: '*'
  namespaceResourceWhitelist:
  - group: '*'
    kind: '*'
  sourceRepos:
  - '*'
status: {}

---
apiVersion: argoproj.io/v1alpha1
kind: ApplicationSet
metadata:
  annotations:
    argocd.argoproj.io/sync-wave: "0"
  creationTimestamp: null
  name: ${project_name}
  namespace: argocd
spec:
  generators:
  - git:
      files:
      - path: apps/**/config.json
      repoURL: ${repo_url}
      requeueAfterSeconds: 20
      revision: ""
      template:
        metadata: {}
        spec:
          destination: {}
          project: ""
          source:
            repoURL: ""
  - git:
      files:
      - path: apps/**/config_dir.json
      repoURL: ${repo_url}
      requeueAfterSeconds: 20
      revision: ""
      template:
        metadata: {}
        spec:
          destination: {}
          project: ""
          source:
            directory:
              exclude: '${gen_exclude}'
              include: '${gen_include}'
              jsonnet: {}
              recurse: true
            repoURL: ""
  syncPolicy: {}
  template:
    metadata:
      labels:
        app.kubernetes.io/managed-by: argocd-autopilot
        app.kubernetes.io/name: '${gen_appName}'
      name: ${project_name}-${gen_userGivenName}
      namespace: argocd
    spec:
      destination:
        namespace: '${gen_destNamespace}'
        server: '${gen_destServer}'
      ignoreDifferences:
      - group: argoproj.io
        jsonPointers:
        - /status
        kind: Application
      project: ${project_name}
      source:
        path: '${gen_srcPath}'
        repoURL: '${gen_srcRepoURL}'
        targetRevision: '${gen_srcTargetRevision}'
      syncPolicy:
        automated:
          allowEmpty: true
          prune: true
          selfHeal: true
status: {}
""")


def normalize_repo_url(repo_url: str) -> str:
    """Append .git unless the URL already ends with it."""
    repo_url = repo_url.strip().rstrip("/")
    return repo_url if repo_url.endswith(".git") else f"{repo_url}.git"


def project_document(project_name: str, cluster_url: str, repo_url: str) -> str:
    """
    AppProject and ApplicationSet for one ArgoCD project, as one YAML stream.

    The ApplicationSet watches apps/**/config.json and apps/**/config_dir.json
    in repo_url; every config_dir.json written by a registration becomes one
    Application in this project.
    """
    require(project_name=project_name, cluster_url=cluster_url, repo_url=repo_url)
    return _PROJECT_TEMPLATE.substitute(
        _PASSTHROUGH,
        project_name=project_name,
        cluster_url=cluster_url,
        repo_url=normalize_repo_url(repo_url),
    )


# =============================================================================
# JENKINS PIPELINES
# =============================================================================

# $$ escapes a literal $ for Jenkins' own groovy interpolation
_PIPELINE_TEMPLATES = {
    "java": Template("""\
pipeline {
  agent any
  environment {
    DOCKER_IMAGE = "${docker_image}"
    REGISTRY = "${registry}"
    CREDENTIALS_ID = "${credential_id}"
  }
  stages {
    stage('Checkout') {
      steps {
        checkout scm
      }
    }
    stage('Build') {
      steps {
        sh './mvnw clean package -DskipTests'
      }
    }
    stage('Test') {
      steps {
        sh './mvnw test'
      }
    }
    stage('Build Docker Image') {
      steps {
        script {
          docker.build("${docker_image}")
        }
      }
    }
    stage('Push Docker Image') {
      steps {
        script {
          docker.withRegistry("https://${registry}", "${credential_id}") {
            docker.image("${docker_image}").push()
          }
        }
      }
    }
    stage('Deploy to Dev') {
      when {
        branch 'dev'
      }
      steps {
        sh 'kubectl apply -f k8s/dev'
      }
    }
    stage('Deploy to Prod') {
      when {
        branch 'main'
      }
      steps {
        sh 'kubectl apply -f k8s/prod'
      }
    }
  }
  post {
    always {
      junit '**/target/surefire-reports/*.xml'
      archiveArtifacts artifacts: '**/target/*.jar', fingerprint: true
    }
    failure {
      mail to: 'team@example.com',
           subject: "Failed Pipeline: $${currentBuild.fullDisplayName}",
           body: "Build $${env.BUILD_URL} failed"
    }
  }
}
"""),
    "python": Template("""\
pipeline {
  agent any
  environment {
    DOCKER_IMAGE = "${docker_image}"
    REGISTRY = "${registry}"
    CREDENTIALS_ID = "${credential_id}"
  }
  stages {
    stage('Checkout') {
      steps {
        checkout scm
      }
    }
    stage('Setup Virtualenv') {
      steps {
        sh 'python -m venv venv'
        sh 'source venv/bin/activate && pip install -r requirements.txt'
      }
    }
    stage('Test') {
      steps {
        sh 'source venv/bin/activate && pytest'
      }
    }
    stage('Build Docker Image') {
      steps {
        script {
          docker.build("${docker_image}")
        }
      }
    }
    stage('Push Docker Image') {
      steps {
        script {
          docker.withRegistry("https://${registry}", "${credential_id}") {
            docker.image("${docker_image}").push()
          }
        }
      }
    }
    stage('Deploy to Dev') {
      when {
        branch 'dev'
      }
      steps {
        sh 'kubectl apply -f k8s/dev'
      }
    }
  }
  post {
    always {
      junit '**/test-reports/*.xml'
    }
    failure {
      slackSend channel: '#builds',
                message: "Build Failed: $${env.JOB_NAME} - $${env.BUILD_NUMBER}"
    }
  }
}
"""),
    "nodejs": Template("""\
pipeline {
  agent any
  environment {
    DOCKER_IMAGE = "${docker_image}"
    REGISTRY = "${registry}"
    CREDENTIALS_ID = "${credential_id}"
    NODE_ENV = 'production'
  }
  stages {
    stage('Checkout') {
      steps {
        checkout scm
      }
    }
    stage('Install Dependencies') {
      steps {
        sh 'npm ci'
      }
    }
    stage('Lint') {
      steps {
        sh 'npm run lint'
      }
    }
    stage('Test') {
      steps {
        sh 'npm test'
      }
    }
    stage('Build') {
      steps {
        sh 'npm run build'
      }
    }
    stage('Build Docker Image') {
      steps {
        script {
          docker.build("${docker_image}")
        }
      }
    }
    stage('Push Docker Image') {
      steps {
        script {
          docker.withRegistry("https://${registry}", "${credential_id}") {
            docker.image("${docker_image}").push()
          }
        }
      }
    }
    stage('Deploy to Staging') {
      when {
        branch 'staging'
      }
      steps {
        sh 'kubectl apply -f k8s/staging'
      }
    }
    stage('Deploy to Production') {
      when {
        branch 'main'
      }
      steps {
        input message: 'Deploy to production?', ok: 'Deploy'
        sh 'kubectl apply -f k8s/production'
      }
    }
  }
  post {
    always {
      junit '**/test-results.xml'
      archiveArtifacts artifacts: '**/build/**'
    }
    success {
      slackSend channel: '#builds',
                message: "Build Succeeded: $${env.JOB_NAME} - $${env.BUILD_NUMBER}"
    }
  }
}
"""),
}


def _check_language(language: str | None) -> str:
    require(language=language)
    key = language.strip().lower()
    if key not in SUPPORTED_LANGUAGES:
        raise UnsupportedLanguageError(language, SUPPORTED_LANGUAGES)
    return key


def pipeline_script(
    language: str,
    docker_image: str,
    registry: str,
    credential_id: str,
) -> str:
    """
    Jenkins declarative pipeline that builds, tests, and pushes an image.

    Raises:
        UnsupportedLanguageError: language is not one of SUPPORTED_LANGUAGES
        MissingParameterError: docker_image, registry or credential_id empty
    """
    key = _check_language(language)
    require(docker_image=docker_image, registry=registry, credential_id=credential_id)
    return _PIPELINE_TEMPLATES[key].substitute(
        docker_image=docker_image,
        registry=registry,
        credential_id=credential_id,
    )


# =============================================================================
# REPOSITORY BOOTSTRAP FILES
# =============================================================================


@dataclass(frozen=True)
class BootstrapFiles:
    """Dockerfile and Jenkinsfile starting points for an application repo."""

    language: str
    dockerfile: str
    jenkinsfile: str
    dockerfile_description: str
    jenkinsfile_description: str


_BOOTSTRAP = {
    "java": BootstrapFiles(
        language="java",
        dockerfile="""\
FROM eclipse-temurin:17-jdk-jammy
WORKDIR /app
COPY .mvn/ .mvn
COPY mvnw pom.xml ./
RUN ./mvnw dependency:go-offline
COPY src ./src
RUN ./mvnw package -DskipTests
ENTRYPOINT ["java", "-jar", "/app/target/*.jar"]
""",
        jenkinsfile="""\
@Library('shared-ci-cd')_
pipeline {
  agent any
  stages {
    stage('Build') {
      steps {
        script {
          if(env.BRANCH_NAME == 'main') {
            sharedPipelineJavaMain()
          } else if (env.CHANGE_ID) {
            sharedPipelineJavaPR()
          } else {
            sharedPipelineJavaDev()
          }
        }
      }
    }
  }
}
""",
        dockerfile_description="Java Dockerfile template with Maven build",
        jenkinsfile_description="Java Jenkinsfile template with shared library",
    ),
    "python": BootstrapFiles(
        language="python",
        dockerfile="""\
FROM python:3.12-slim
WORKDIR /app
COPY requirements.txt .
RUN pip install --no-cache-dir -r requirements.txt
COPY . .
CMD ["python", "app.py"]
""",
        jenkinsfile="""\
@Library('shared-ci-cd')_
pipeline {
  agent any
  stages {
    stage('Setup') {
      steps {
        script {
          sh 'python -m venv venv'
          sh 'source venv/bin/activate'
        }
      }
    }
    stage('Build') {
      steps {
        script {
          if(env.BRANCH_NAME == 'main') {
            sharedPipelinePythonMain()
          } else {
            sharedPipelinePythonDev()
          }
        }
      }
    }
  }
}
""",
        dockerfile_description="Python Dockerfile template",
        jenkinsfile_description="Python Jenkinsfile template",
    ),
    "nodejs": BootstrapFiles(
        language="nodejs",
        dockerfile="""\
FROM node:18-alpine
WORKDIR /app
COPY package*.json ./
RUN npm ci
COPY . .
RUN npm run build
CMD ["npm", "start"]
""",
        jenkinsfile="""\
@Library('shared-ci-cd')_
pipeline {
  agent any
  stages {
    stage('Build') {
      steps {
        script {
          if(env.BRANCH_NAME == 'main') {
            sharedPipelineNodeMain()
          } else if (env.CHANGE_ID) {
            sharedPipelineNodePR()
          } else {
            sharedPipelineNodeDev()
          }
        }
      }
    }
  }
}
""",
        dockerfile_description="Node.js Dockerfile template",
        jenkinsfile_description="Node.js Jenkinsfile template with shared library",
    ),
}


def bootstrap_files(language: str) -> BootstrapFiles:
    """Dockerfile and Jenkinsfile for a new repository in the given language."""
    return _BOOTSTRAP[_check_language(language)]
