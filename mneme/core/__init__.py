from mneme.core.similarity import (
    jaccard,
    cosine,
    most_relevant_sentence,
)
from mneme.core.keywords import extract_keywords
from mneme.core.retrieval import (
    RelevanceRanker,
    FullTextStrategy,
    SubstringFallbackStrategy,
    create_strategy,
)
from mneme.core.graph import expand_context
from mneme.core.cache import (
    SemanticCache,
    CacheLookup,
    normalize_question,
)
from mneme.core.synthesis import (
    AnswerSynthesizer,
    template_answer,
)
from mneme.core.pipeline import (
    AnswerPipeline,
    QuestionValidationError,
    confidence,
)
