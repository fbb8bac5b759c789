"""
Autoencoder anomaly detector for keystroke dynamics.

A small feed-forward network (input -> hidden -> bottleneck -> output) is
trained to reproduce the normalized feature vectors of one user. The mean
squared reconstruction error of a new sample is its anomaly score: samples
typed by the enrolled user reconstruct well, others do not.

Training uses per-sample stochastic gradient descent with full
backpropagation through all three layers.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import structlog

from .constants import BIAS_INIT_RANGE, BOTTLENECK_SIZE, HIDDEN_SIZE
from .exceptions import ModelError, ValidationError

# Initialize structured logger
logger = structlog.get_logger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray]


def _relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


class Autoencoder:
    """
    Three-layer autoencoder with ReLU encoder layers and a linear decoder.

    Parameters
    ----------
    input_size : int
        Dimensionality of the feature vectors.
    hidden_size : int, default=HIDDEN_SIZE
        Width of the first encoder layer.
    bottleneck_size : int, default=BOTTLENECK_SIZE
        Width of the bottleneck layer.
    random_state : Optional[int], default=None
        Seed for weight initialization and shuffling.

    Examples
    --------
    >>> model = Autoencoder(34, random_state=0)
    >>> corpus = np.random.rand(20, 34)
    >>> losses = model.train(corpus, epochs=50, learning_rate=0.01)
    >>> model.reconstruction_error(corpus[0]) >= 0
    True
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int = HIDDEN_SIZE,
        bottleneck_size: int = BOTTLENECK_SIZE,
        random_state: Optional[int] = None,
    ) -> None:
        if input_size < 1 or hidden_size < 1 or bottleneck_size < 1:
            raise ValidationError(
                "Layer sizes must be positive",
                field="layer_sizes",
                context={
                    "input_size": input_size,
                    "hidden_size": hidden_size,
                    "bottleneck_size": bottleneck_size,
                },
            )

        self.input_size = input_size
        self.hidden_size = hidden_size
        self.bottleneck_size = bottleneck_size
        self._rng = np.random.default_rng(random_state)

        self.weights1 = self._initialize_weights(input_size, hidden_size)
        self.weights2 = self._initialize_weights(hidden_size, bottleneck_size)
        self.weights3 = self._initialize_weights(bottleneck_size, input_size)

        self.biases1 = self._initialize_biases(hidden_size)
        self.biases2 = self._initialize_biases(bottleneck_size)
        self.biases3 = self._initialize_biases(input_size)

    def _initialize_weights(self, fan_in: int, fan_out: int) -> np.ndarray:
        """Uniform initialization in ``±sqrt(6 / (fan_in + fan_out))``."""
        limit = np.sqrt(6.0 / (fan_in + fan_out))
        return self._rng.uniform(-limit, limit, size=(fan_in, fan_out))

    def _initialize_biases(self, size: int) -> np.ndarray:
        return self._rng.uniform(-BIAS_INIT_RANGE, BIAS_INIT_RANGE, size=size)

    @property
    def parameters(self) -> List[np.ndarray]:
        return [
            self.weights1,
            self.weights2,
            self.weights3,
            self.biases1,
            self.biases2,
            self.biases3,
        ]

    def is_finite(self) -> bool:
        """True when no weight or bias is NaN or infinite."""
        return all(bool(np.isfinite(p).all()) for p in self.parameters)

    def _check_input(self, x: ArrayLike) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if x.shape[-1] != self.input_size:
            raise ValidationError(
                f"Expected {self.input_size} features, got {x.shape[-1]}",
                field="input",
                modality="keystroke",
            )
        return x

    def _forward_layers(self, x: np.ndarray):
        z1 = x @ self.weights1 + self.biases1
        h1 = _relu(z1)
        z2 = h1 @ self.weights2 + self.biases2
        h2 = _relu(z2)
        output = h2 @ self.weights3 + self.biases3
        return z1, h1, z2, h2, output

    def forward(self, x: ArrayLike) -> np.ndarray:
        """
        Reconstruct a feature vector (or a batch of them).

        Parameters
        ----------
        x : ArrayLike
            Normalized input of shape ``(input_size,)`` or ``(n, input_size)``.

        Returns
        -------
        np.ndarray
            Reconstruction with the same shape as ``x``.
        """
        return self._forward_layers(self._check_input(x))[-1]

    predict = forward

    def reconstruction_error(self, x: ArrayLike) -> float:
        """Mean squared difference between ``x`` and its reconstruction."""
        x = self._check_input(x)
        return float(np.mean((x - self.forward(x)) ** 2))

    def reconstruction_errors(self, corpus: ArrayLike) -> np.ndarray:
        """Per-sample reconstruction errors of a 2D corpus."""
        corpus = np.atleast_2d(self._check_input(corpus))
        return np.mean((corpus - self.forward(corpus)) ** 2, axis=1)

    def _backpropagate(self, x: np.ndarray, learning_rate: float) -> float:
        z1, h1, z2, h2, output = self._forward_layers(x)
        diff = output - x
        loss = float(np.mean(diff**2))

        # dL/d(output) for L = mean((output - x)^2)
        grad_output = 2.0 * diff / self.input_size

        grad_w3 = np.outer(h2, grad_output)
        grad_b3 = grad_output

        grad_z2 = (grad_output @ self.weights3.T) * (z2 > 0)
        grad_w2 = np.outer(h1, grad_z2)
        grad_b2 = grad_z2

        grad_z1 = (grad_z2 @ self.weights2.T) * (z1 > 0)
        grad_w1 = np.outer(x, grad_z1)
        grad_b1 = grad_z1

        self.weights3 -= learning_rate * grad_w3
        self.biases3 -= learning_rate * grad_b3
        self.weights2 -= learning_rate * grad_w2
        self.biases2 -= learning_rate * grad_b2
        self.weights1 -= learning_rate * grad_w1
        self.biases1 -= learning_rate * grad_b1

        return loss

    def train(
        self, corpus: ArrayLike, epochs: int, learning_rate: float
    ) -> List[float]:
        """
        Fit the network to reproduce the corpus.

        Parameters
        ----------
        corpus : ArrayLike
            Normalized training samples, shape ``(n, input_size)``.
        epochs : int
            Number of passes over the corpus.
        learning_rate : float
            Gradient descent step size.

        Returns
        -------
        List[float]
            Epoch-average loss for every epoch.

        Raises
        ------
        ValidationError
            If the corpus is empty or malformed.
        ModelError
            If any parameter becomes non-finite.
        """
        corpus = np.atleast_2d(self._check_input(corpus))
        if corpus.shape[0] == 0:
            raise ValidationError("Cannot train on an empty corpus", field="corpus")
        if not np.isfinite(corpus).all():
            raise ValidationError("Training corpus contains non-finite values", field="corpus")

        logger.info(
            "Training autoencoder",
            samples=corpus.shape[0],
            epochs=epochs,
            learning_rate=learning_rate,
            layer_sizes=(self.input_size, self.hidden_size, self.bottleneck_size),
        )

        losses: List[float] = []
        for epoch in range(epochs):
            order = self._rng.permutation(corpus.shape[0])
            total_loss = 0.0
            for index in order:
                total_loss += self._backpropagate(corpus[index], learning_rate)

            avg_loss = total_loss / corpus.shape[0]
            if not np.isfinite(avg_loss) or not self.is_finite():
                raise ModelError("Model parameters became non-finite", epoch=epoch + 1)
            losses.append(avg_loss)

            if epoch % 50 == 0 or epoch == epochs - 1:
                logger.debug("Training progress", epoch=epoch + 1, loss=avg_loss)

        return losses

    def to_dict(self) -> Dict[str, Any]:
        """Serialize layer sizes, weights and biases to plain lists."""
        return {
            "input_size": self.input_size,
            "hidden_size": self.hidden_size,
            "bottleneck_size": self.bottleneck_size,
            "weights1": self.weights1.tolist(),
            "weights2": self.weights2.tolist(),
            "weights3": self.weights3.tolist(),
            "biases1": self.biases1.tolist(),
            "biases2": self.biases2.tolist(),
            "biases3": self.biases3.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Autoencoder":
        """
        Rebuild a model from ``to_dict`` output.

        Raises
        ------
        ModelError
            If the stored shapes do not match the layer sizes or values are
            non-finite.
        """
        model = cls(data["input_size"], data["hidden_size"], data["bottleneck_size"])
        expected = {
            "weights1": (model.input_size, model.hidden_size),
            "weights2": (model.hidden_size, model.bottleneck_size),
            "weights3": (model.bottleneck_size, model.input_size),
            "biases1": (model.hidden_size,),
            "biases2": (model.bottleneck_size,),
            "biases3": (model.input_size,),
        }
        for name, shape in expected.items():
            value = np.asarray(data[name], dtype=np.float64)
            if value.shape != shape:
                raise ModelError(f"Stored {name} has shape {value.shape}, expected {shape}")
            setattr(model, name, value)

        if not model.is_finite():
            raise ModelError("Stored model contains non-finite parameters")
        return model
