"""
Prompt templates for query expansion and answer synthesis.
"""


# Query expansion: one alternative phrasing per line, nothing else
QUERY_EXPANSION_TEMPLATE = (
    "Generate {n} short alternative search queries that could help retrieve "
    "relevant passages for the following question. Keep each on a new line, "
    "no numbering or punctuation beyond the query itself. "
    'Question: "{query}"'
)


ANSWER_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use ONLY the provided context. "
    "If unsure, say you do not know."
)

ANSWER_USER_TEMPLATE = """Context:
{context}

Question: {question}"""


FALLBACK_ANSWER = "I could not find enough information in the indexed documents to answer this question."
