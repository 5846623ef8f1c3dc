import boto3
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from .config import config, ModelConfig, ModelProvider
from .metrics import REQUEST_COUNTER, RESPONSE_TIME, TOKEN_COUNTER, ACTIVE_REQUESTS


logger = logging.getLogger(__name__)

THROTTLING_CODES = {"ThrottlingException", "TooManyRequestsException", "ServiceQuotaExceededException"}


class BedrockClientError(Exception):
    """A model call failed"""


class BedrockRequestError(BedrockClientError):
    """The request body could not be built for the configured model"""


class BedrockResponseError(BedrockClientError):
    """The model answered with something that is not a completion"""


class BedrockRateLimitError(BedrockClientError):
    """Bedrock throttled the call"""


class BedrockTimeoutError(BedrockClientError):
    """The model did not answer within the configured read timeout"""


def estimate_tokens(text: str) -> int:
    """Rough token count: an average word is ~1.3 tokens for most tokenizers"""
    return int(len(text.split()) * 1.3)


def _claude_body(model_id: str, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
    if "claude-3" not in model_id:
        return {
            "prompt": f"\n\nHuman: {prompt}\n\nAssistant:",
            "max_tokens_to_sample": max_tokens,
            "temperature": temperature,
            "stop_sequences": ["\n\nHuman:"],
        }
    return {
        "anthropic_version": "bedrock-2023-05-31",
        "messages": [{"role": "user", "content": [{"type": "text", "text": prompt}]}],
        "max_tokens": max_tokens,
        "temperature": temperature,
    }


def _llama_body(model_id: str, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
    return {"prompt": prompt, "max_gen_len": max_tokens, "temperature": temperature}


def _mistral_body(model_id: str, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
    return {"prompt": f"<s>[INST] {prompt} [/INST]", "max_tokens": max_tokens, "temperature": temperature}


def _claude_text(model_id: str, payload: Dict[str, Any]) -> str:
    if "claude-3" not in model_id:
        return payload.get("completion", "")
    content = payload.get("content", [])
    if not isinstance(content, list):
        raise BedrockResponseError(f"Unexpected 'content' format: {type(content)}")
    # tool_use and other block types carry no completion text
    return "".join(block.get("text", "") for block in content if block.get("type") == "text")


def _llama_text(model_id: str, payload: Dict[str, Any]) -> str:
    return payload.get("generation", "")


def _mistral_text(model_id: str, payload: Dict[str, Any]) -> str:
    return payload.get("outputs", [{}])[0].get("text", "")


BodyBuilder = Callable[[str, str, int, float], Dict[str, Any]]
TextReader = Callable[[str, Dict[str, Any]], str]

PROVIDERS: Dict[ModelProvider, Tuple[BodyBuilder, TextReader]] = {
    ModelProvider.CLAUDE: (_claude_body, _claude_text),
    ModelProvider.LLAMA: (_llama_body, _llama_text),
    ModelProvider.MISTRAL: (_mistral_body, _mistral_text),
}


class BedrockClient:
    """Completion client for the model that translates unknown ingredients"""

    def __init__(self, custom_config: Optional[ModelConfig] = None):
        """
        Args:
            custom_config: Optional model configuration, defaults to the environment
        """
        self.config = custom_config or config
        # Throttling is retried by tenacity in invoke(), not by botocore
        boto_config = BotoConfig(
            read_timeout=self.config.timeout_seconds,
            connect_timeout=min(self.config.timeout_seconds, 5),
            retries={"max_attempts": 0},
        )
        self.client = boto3.client("bedrock-runtime", region_name=self.config.region, config=boto_config)
        self.request_count = 0
        logger.info(f"Initialized BedrockClient with model {self.config.model_id}")

    def _provider(self):
        try:
            return PROVIDERS[ModelProvider(self.config.model_provider)]
        except ValueError:
            raise BedrockRequestError(f"Unsupported provider: {self.config.model_provider}")

    def _format_prompt(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        build_body, _ = self._provider()
        return build_body(self.config.model_id, prompt, max_tokens, temperature)

    def _parse_response(self, payload: Dict[str, Any]) -> Dict[str, str]:
        _, read_text = self._provider()
        try:
            text = read_text(self.config.model_id, payload)
        except (AttributeError, IndexError, TypeError) as e:
            raise BedrockResponseError(f"Failed to parse response: {str(e)}")
        if not text:
            logger.warning(f"Model {self.config.model_id} returned no completion text: {payload}")
        return {"text": text.strip()}

    def invoke(self, prompt: str, max_tokens: Optional[int] = None,
               temperature: Optional[float] = None) -> Dict[str, str]:
        """
        Complete a prompt, retrying throttled calls with exponential backoff

        Returns:
            {"text": <completion text>}

        Raises:
            BedrockTimeoutError: If the model does not answer in time
            BedrockRateLimitError: If every attempt was throttled
            BedrockClientError: If the call fails for any other reason
        """
        attempt = retry(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(BedrockRateLimitError),
            reraise=True,
        )(self._invoke_once)
        return attempt(
            prompt,
            self.config.max_tokens if max_tokens is None else max_tokens,
            self.config.temperature if temperature is None else temperature,
        )

    def _invoke_once(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, str]:
        model = self.config.model_id
        self.request_count += 1
        status = "error"
        ACTIVE_REQUESTS.inc()
        start_time = time.time()

        try:
            body = json.dumps(self._format_prompt(prompt, max_tokens, temperature))
            TOKEN_COUNTER.labels(model=model, type="input").inc(estimate_tokens(prompt))
            response = self.client.invoke_model(
                modelId=model, contentType="application/json", accept="application/json", body=body,
            )
            try:
                payload = json.loads(response["body"].read())
            except (KeyError, ValueError) as e:
                raise BedrockResponseError(f"Unreadable response body: {str(e)}")

            completion = self._parse_response(payload)
            TOKEN_COUNTER.labels(model=model, type="output").inc(estimate_tokens(completion["text"]))
            status = "success"
            return completion

        except (ReadTimeoutError, ConnectTimeoutError) as e:
            status = "timeout"
            logger.error(f"Model call timed out after {self.config.timeout_seconds}s: {str(e)}")
            raise BedrockTimeoutError(f"Model call timed out: {str(e)}")
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in THROTTLING_CODES:
                status = "throttled"
                logger.warning(f"Throttled by Bedrock ({code}), attempt {self.request_count}")
                raise BedrockRateLimitError(f"Rate limit exceeded: {code}")
            logger.error(f"Bedrock rejected the call: {str(e)}")
            raise BedrockClientError(f"AWS service error: {str(e)}")
        except BotoCoreError as e:
            logger.error(f"Boto3 error: {str(e)}")
            raise BedrockClientError(f"AWS service error: {str(e)}")
        finally:
            ACTIVE_REQUESTS.dec()
            REQUEST_COUNTER.labels(model=model, status=status).inc()
            RESPONSE_TIME.labels(model=model).observe(time.time() - start_time)

    def close(self):
        logger.info(f"Closing BedrockClient for model {self.config.model_id}")
        self.client.close()
