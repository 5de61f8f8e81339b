"""
校园食堂订单支付与实时通知服务
"""
